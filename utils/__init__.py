# Utils package - validators, serializers, logging, config and background tasks

import os
import atexit
from app import create_app, socketio
from utils.background_tasks import init_background_tasks, cleanup_background_tasks

# Create the app instance for the server process
app = create_app()

if app.config['RELAY_TIMERS_ENABLED']:
    app.extensions['broadcast_relay'].start_timers(socketio, app.config['RELAY_TIME_UNIT_SECONDS'])

if app.config['RETENTION_SCHEDULER_ENABLED']:
    init_background_tasks(app)
    atexit.register(cleanup_background_tasks, app)

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    socketio.run(app, host='0.0.0.0', port=port, debug=False, allow_unsafe_werkzeug=True)

import os

from astranodes import create_app
from astranodes.extensions import socketio
from astranodes.scheduler import create_scheduler

app = create_app()

if __name__ == '__main__':
    port = app.config['PORT']
    print("=" * 62)
    print("  🎮  AstraNodes — Minecraft Hosting Control Panel API")
    print("=" * 62)
    print(f"  📍 URL          : http://0.0.0.0:{port}")
    print(f"  🦖 Panel        : {app.config['PTERODACTYL_URL']}")
    print(f"  🗄  Database     : {os.path.abspath(app.config['DB_PATH'])}")
    print(f"  ⏱  Scheduler    : {'on' if app.config['SCHEDULER_ENABLED'] else 'off'}")
    print("=" * 62)
    if app.config['SCHEDULER_ENABLED']:
        create_scheduler(app).start()
    socketio.run(app, host='0.0.0.0', port=port, debug=False, allow_unsafe_werkzeug=True)

import os

from mangalink_app import create_app

app = create_app()

if __name__ == '__main__':
    # Host/port come from the app factory settings (HOST / PORT env vars)
    host = app.config.get('HOST', '127.0.0.1')
    port = app.config.get('PORT', 5000)
    debug = os.environ.get('FLASK_DEBUG', 'false').lower() in ('true', '1', 'yes')

    # The reloader would start a second engine loop in the child process
    app.run(host=host, port=port, debug=debug, use_reloader=False)

#!/usr/bin/env python3
"""
Main entry point for running the xpreview service
"""

from xpreview.main import create_app
import os

if __name__ == '__main__':
    os.environ.setdefault('FLASK_ENV', 'development')

    app = create_app()
    port = int(os.environ.get('PORT', '5001'))

    print("Starting xpreview review engine...")
    print(f"API available at: http://localhost:{port}/api")
    print("\nPress CTRL+C to stop the server")

    # The reloader would start a second scheduler
    app.run(host='0.0.0.0', port=port, debug=app.config.get('DEBUG', False), use_reloader=False)

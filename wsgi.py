# WSGI entry point
import os

os.environ.setdefault('FLASK_ENV', 'production')

from gymaccess import create_app  # noqa: E402

application = create_app(os.environ['FLASK_ENV'])

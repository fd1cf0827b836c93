from wakegate.app import create_app
from wakegate.db import configure_logging

configure_logging()
app = create_app()

"""
Standalone server app, configured from the environment.

    uvicorn postgraphql.main:app
"""

from postgraphql import postgraphql
from postgraphql.core import settings
from postgraphql.core.log import configure_logging

configure_logging(settings.log_level())

# The schema build starts in the app lifespan, once uvicorn's loop is running.
app = postgraphql(
    settings.database_url(),
    settings.schema_names(),
    settings.options_from_env(),
)

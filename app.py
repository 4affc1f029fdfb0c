import logging

from api.routes import create_app
from lib.config import get_settings

logger = logging.getLogger(__name__)

app = create_app()

if __name__ == "__main__":
    port = get_settings().port
    logger.info(f"Starting Flask server on port {port}...")
    app.run(host="0.0.0.0", port=port)

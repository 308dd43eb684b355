"""
Run the Infinite Pages API with uvicorn
"""
import logging
import os
import sys

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)

    try:
        port = int(os.getenv("PORT", 8000))
    except ValueError:
        logger.warning(f"Invalid PORT value: {os.getenv('PORT')}, using default 8000")
        port = 8000

    logger.info(f"Starting Infinite Pages API server on port {port}")
    logger.info(f"DATABASE_URL: {'SET' if os.getenv('DATABASE_URL') else 'NOT SET'}")

    try:
        uvicorn.run(
            "infinite_pages.api_server:app",
            host="0.0.0.0",
            port=port,
            log_config=None,
            access_log=True,
            reload=os.getenv("ENV", "dev").lower() == "dev",
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        sys.exit(1)

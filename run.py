# run.py
"""
Single-script entry point to run the bartok barcode server.
"""
import sys
from pathlib import Path

# Add project root to path to ensure 'bartok' can be imported
sys.path.insert(0, str(Path(__file__).resolve().parent))

from bartok.utils import logger


def main():
    """
    Build the token manager from the environment, check the store, then serve.
    """
    from bartok.barcode_tokens import get_manager
    from bartok.server import run as server_run

    manager = get_manager()
    policy = manager.policy
    if not manager.store.ping():
        logger.warning("Token store did not answer ping; requests will fail with 503 until it does.")

    logger.info(
        "Starting barcode server (active window %ss, grace buffer %ss, atomic consume %s)...",
        policy.active_window_seconds,
        policy.grace_buffer_seconds,
        policy.atomic_consume and manager.store.supports_keep_ttl,
    )
    try:
        server_run()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Main process interrupted. Shutting down...")
    except Exception as e:
        logger.error("A critical error occurred in the barcode server: %s", e, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

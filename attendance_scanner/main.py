import logging
from nicegui import app, ui

from attendance_scanner.core import config_manager
from attendance_scanner.services.connectivity import connectivity_monitor
from attendance_scanner.services.scanner.manager import scanner_manager
from attendance_scanner.services.session_store import session_store
from attendance_scanner.ui.scan import scan_page

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def init():
    """Restores the persisted session before the first page is served."""
    session = session_store.load()
    if session:
        logger.info(f"Resuming slot '{session.slot_name}' with {len(session.records)} records")
    else:
        logger.info("No saved session, waiting for slot selection")


def teardown():
    scanner_manager.stop()
    connectivity_monitor.teardown()


app.on_startup(init)
app.on_shutdown(teardown)


@ui.page('/')
def index():
    scan_page()


def main():
    config = config_manager.load_config()
    if not config_manager.get_api_key():
        logger.warning("No API key configured. Set GEMINI_API_KEY or add api_key to data/config.json")
    ui.run(
        title=f"{config['institution_name']} Attendance",
        port=int(config['port']),
        reload=False,
        favicon='🪪',
    )


if __name__ in {"__main__", "__mp_main__"}:
    main()

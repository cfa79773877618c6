import logging

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def setup_logging(level: str = 'INFO') -> None:
    resolved = getattr(logging, str(level).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    root.setLevel(resolved)
    logging.getLogger('vision_dashboard').setLevel(resolved)
    # Multipart parsing is chatty at DEBUG.
    logging.getLogger('multipart').setLevel(logging.WARNING)

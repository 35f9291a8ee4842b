import logging


class LoggerSetup:
    """root logger shared by the poll daemon and the one-shot commands"""
    def __init__(self, log_level):
        self.log_level = log_level

    def setup_logging(self):
        level = getattr(logging, self.log_level.upper(), logging.INFO)
        logging.basicConfig(
            format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            level=level,
        )

        # one request line per GraphQL/REST call buries the order log,
        # keep them for DEBUG runs only
        http_level = logging.INFO if level <= logging.DEBUG else logging.ERROR
        logging.getLogger("httpx").setLevel(http_level)
        logging.getLogger("httpcore").setLevel(logging.ERROR)

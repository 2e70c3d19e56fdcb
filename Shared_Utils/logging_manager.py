import logging
import os
from logging.handlers import TimedRotatingFileHandler


class CustomLogger(logging.Logger):
    # Ledger-specific levels
    SHORTFALL_LEVEL_NUM = 27
    RECOVERY_LEVEL_NUM = 23

    logging.addLevelName(SHORTFALL_LEVEL_NUM, "SHORTFALL")
    logging.addLevelName(RECOVERY_LEVEL_NUM, "RECOVERY")

    def shortfall(self, message, *args, **kwargs):
        if self.isEnabledFor(self.SHORTFALL_LEVEL_NUM):
            self._log(self.SHORTFALL_LEVEL_NUM, f"SHORTFALL: {message}", args, **kwargs)

    def recovery(self, message, *args, **kwargs):
        if self.isEnabledFor(self.RECOVERY_LEVEL_NUM):
            self._log(self.RECOVERY_LEVEL_NUM, f"RECOVERY: {message}", args, **kwargs)


class CustomFormatter(logging.Formatter):
    grey = "\x1b[38;21m"
    blue = "\x1b[34;21m"
    red = "\x1b[31;21m"
    orange = "\x1b[38;5;214m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"

    FORMATS = {
        logging.DEBUG: grey + format + reset,
        logging.INFO: grey + format + reset,
        logging.WARNING: orange + format + reset,
        logging.ERROR: red + format + reset,
        logging.CRITICAL: bold_red + format + reset,
        CustomLogger.SHORTFALL_LEVEL_NUM: orange + format + reset,
        CustomLogger.RECOVERY_LEVEL_NUM: blue + format + reset,
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, self.format)
        formatter = logging.Formatter(log_fmt, "%Y-%m-%d %H:%M:%S")
        return formatter.format(record)


class LoggerManager:
    _instance = None
    _is_initialized = False

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super(LoggerManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, config, log_dir=None):
        if not self._is_initialized:
            self._log_level = config.get('log_level', logging.INFO)
            self.log_dir = log_dir or config.get('log_dir') or "logs"
            self.loggers = {}
            self.setup_logging()
            self._is_initialized = True

    @classmethod
    def reset(cls):
        """Forget the singleton; handlers on existing loggers are closed."""
        if cls._instance is not None:
            for logger in cls._instance.loggers.values():
                for handler in list(logger.handlers):
                    handler.close()
                    logger.removeHandler(handler)
        cls._instance = None
        cls._is_initialized = False

    @property
    def log_level(self):
        return self._log_level

    def setup_logging(self):
        self.setup_logger('fifo_logger', 'fifo')
        self.setup_logger('shared_logger', 'shared')

    def setup_logger(self, logger_name, subfolder):
        log_path = os.path.join(self.log_dir, subfolder)
        os.makedirs(log_path, exist_ok=True)

        log_file = os.path.join(log_path, f"{logger_name}.log")
        logger = CustomLogger(logger_name)
        logger.setLevel(logging.DEBUG)  # File will always capture everything

        # Console shows the configured level (INFO by default)
        console_handler = logging.StreamHandler()
        console_handler.setLevel(self._log_level)
        console_handler.setFormatter(CustomFormatter())
        logger.addHandler(console_handler)

        # File keeps full DEBUG logs for postmortem analysis
        file_handler = TimedRotatingFileHandler(
            log_file, when="midnight", interval=1, backupCount=7
        )
        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

        self.loggers[logger_name] = logger
        self.setup_sqlalchemy_logging(logging.WARNING)

    def get_logger(self, logger_name):
        return self.loggers.get(logger_name)

    @staticmethod
    def setup_sqlalchemy_logging(level=logging.WARNING):
        sqlalchemy_logger = logging.getLogger('sqlalchemy.engine')
        sqlalchemy_logger.setLevel(level)

        if sqlalchemy_logger.hasHandlers():
            sqlalchemy_logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(CustomFormatter())
        console_handler.setLevel(level)
        sqlalchemy_logger.addHandler(console_handler)

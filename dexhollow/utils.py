import json
import logging
import sys
import zlib

PACKAGE_LOGGER = "dexhollow"


class JsonFormatter(logging.Formatter):
    """
    Formatter that outputs JSON strings after parsing the LogRecord.

    @param dict fmt_dict: Key: logging format attribute pairs. Defaults to {"level": "levelname", "logger": "name",
        "message": "message"}.
    @param str time_format: time.strftime() format string. Default: "%Y-%m-%dT%H:%M:%S"
    @param str msec_format: Microsecond formatting. Appended at the end. Default: "%s.%03dZ"
    """

    def __init__(self, fmt_dict: dict = None, time_format: str = "%Y-%m-%dT%H:%M:%S", msec_format: str = "%s.%03dZ"):
        super().__init__()
        self.fmt_dict = fmt_dict if fmt_dict is not None else {"level": "levelname", "logger": "name",
                                                               "message": "message"}
        self.default_time_format = time_format
        self.default_msec_format = msec_format
        self.datefmt = None

    def usesTime(self) -> bool:
        """
        Overwritten to look for the attribute in the format dict values instead of the fmt string.
        """
        return "asctime" in self.fmt_dict.values()

    def formatMessage(self, record) -> dict:
        """
        Overwritten to return a dictionary of the relevant LogRecord attributes instead of a string.
        KeyError is raised if an unknown attribute is provided in the fmt_dict.
        """
        return {fmt_key: record.__dict__[fmt_val] for fmt_key, fmt_val in self.fmt_dict.items()}

    def format(self, record) -> str:
        record.message = record.getMessage()

        if self.usesTime():
            record.asctime = self.formatTime(record, self.datefmt)

        message_dict = self.formatMessage(record)

        if record.exc_info:
            if not record.exc_text:
                record.exc_text = self.formatException(record.exc_info)

        if record.exc_text:
            message_dict["exc_info"] = record.exc_text

        return json.dumps(message_dict, default=str)


class LogHandler(logging.StreamHandler):
    """stdout handler. Each logger name gets its own ANSI color unless ``color`` is off or JSON is used."""

    def __init__(self, color: bool = True):
        super().__init__(sys.stdout)
        self.color = color
        self.setFormatter(logging.Formatter('%(levelname)-8s %(name)s: %(message)s'))

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if not self.color or isinstance(self.formatter, JsonFormatter):
            return text
        color = zlib.adler32(record.name.encode()) % 7 + 31
        return ("\x1b[%dm" % color) + text + "\x1b[0m"


def setup_logging(verbose: bool = False, json_output: bool = False) -> logging.Logger:
    log = logging.getLogger(PACKAGE_LOGGER)
    for old_handler in list(log.handlers):
        log.removeHandler(old_handler)

    handler = LogHandler(color=sys.stdout.isatty())
    if json_output:
        handler.setFormatter(JsonFormatter())
    log.addHandler(handler)
    log.setLevel(logging.DEBUG if verbose else logging.INFO)
    log.propagate = False
    return log

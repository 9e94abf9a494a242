"""
Per-object logging of the reconciliation, readiness, and draining activities.

Everything logged about a specific object goes through an :class:`ObjectLogger`,
which carries the object's reference in the log records. The formatters then
either prefix the messages with the object's namespace & name (text logs),
or put the reference into a separate field (JSON logs for the log parsers).
"""
import copy
import enum
import logging
from typing import Any, Mapping, MutableMapping, Optional, Sequence, Tuple, Type, Union

from pythonjsonlogger.core import RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter

from konverge import typedefs
from konverge.structs import bodies

DEFAULT_JSON_REFKEY = 'object'
""" A key for object references in JSON logs, as seen by the log parsers. """

# The upper bounds of the levels, checked in order; everything above is "fatal".
SEVERITIES: Sequence[Tuple[int, str]] = [
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
]


class LogFormat(enum.Enum):
    """ Log formats, as accepted by `configure`. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # a marker only, never used as a format string


def get_severity(levelno: int) -> str:
    for limit, severity in SEVERITIES:
        if levelno <= limit:
            return severity
    return 'fatal'


def get_prefix(ref: Mapping[str, Any]) -> str:
    namespace = ref.get('namespace')
    name = ref.get('name', '')
    return f"[{namespace}/{name}]" if namespace else f"[{name}]"


class ObjectFormatter(logging.Formatter):
    pass


class ObjectTextFormatter(ObjectFormatter, logging.Formatter):
    pass


class ObjectJsonFormatter(ObjectFormatter, JsonFormatter):
    """
    JSON logs with the object reference under its own key, and a severity.

    The raw ``k8s_ref`` attribute of the records is never dumped as is.
    """

    def __init__(
            self,
            *args: Any,
            refkey: Optional[str] = None,
            **kwargs: Any,
    ) -> None:
        reserved_attrs = set(kwargs.pop('reserved_attrs', RESERVED_ATTRS)) | {'k8s_ref'}
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, reserved_attrs=reserved_attrs, **kwargs)
        self.refkey: str = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: MutableMapping[str, object],
            record: logging.LogRecord,
            message_dict: MutableMapping[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        ref = getattr(record, 'k8s_ref', None)
        if ref is not None:
            log_record[self.refkey] = ref
        log_record.setdefault('severity', get_severity(record.levelno))


class ObjectPrefixingMixin(ObjectFormatter):
    def format(self, record: logging.LogRecord) -> str:
        ref = getattr(record, 'k8s_ref', None)
        if ref is not None:
            record = copy.copy(record)  # the same record goes to other handlers unprefixed
            record.msg = f"{get_prefix(ref)} {record.msg}"
        return super().format(record)


class ObjectPrefixingTextFormatter(ObjectPrefixingMixin, ObjectTextFormatter):
    pass


class ObjectPrefixingJsonFormatter(ObjectPrefixingMixin, ObjectJsonFormatter):
    pass


class ObjectLogger(typedefs.LoggerAdapter):
    """
    A logger adapter that marks all its records with the object's reference.

    One is made for every object being applied, waited for, or evicted.
    The reference is built at construction: the later changes of the body
    (e.g. by normalization) do not affect the messages.

    If another adapter is given as the logger, the adapter is unwrapped,
    and only the newest object's reference is used.
    """

    def __init__(
            self,
            *,
            body: Mapping[str, Any],
            logger: Optional[typedefs.Logger] = None,
    ) -> None:
        base = objects_logger if logger is None else logger
        while isinstance(base, logging.LoggerAdapter):
            base = base.logger
        super().__init__(base, {'k8s_ref': bodies.build_object_reference(body)})

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> Tuple[str, MutableMapping[str, Any]]:
        # The stdlib replaces the call's extras with the adapter's ones; keep both.
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs


objects_logger = logging.getLogger('konverge.objects')


def configure(
        debug: Optional[bool] = None,
        verbose: Optional[bool] = None,
        quiet: Optional[bool] = None,
        log_format: Union[LogFormat, str] = LogFormat.FULL,
        log_prefix: Optional[bool] = False,
        log_refkey: Optional[str] = None,
) -> None:
    """
    Send the logs to stderr in the requested format (for the applications).

    The libraries' own logs (asyncio, aiohttp) are muted unless in debug mode.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(make_formatter(log_format=log_format,
                                        log_prefix=log_prefix,
                                        log_refkey=log_refkey))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug or verbose else logging.WARNING if quiet else logging.INFO)

    for name in ['asyncio', 'aiohttp']:
        library_logger = logging.getLogger(name)
        library_logger.propagate = bool(debug)
        if not debug:
            library_logger.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: Union[LogFormat, str] = LogFormat.FULL,
        log_prefix: Optional[bool] = False,
        log_refkey: Optional[str] = None,
) -> ObjectFormatter:
    """
    Pick a formatter for the format; prefix the text logs by default, not JSON.
    """
    if log_prefix is None:
        log_prefix = log_format is not LogFormat.JSON

    cls: Type[ObjectFormatter]
    if log_format is LogFormat.JSON:
        cls = ObjectPrefixingJsonFormatter if log_prefix else ObjectJsonFormatter
        return cls(refkey=log_refkey)
    elif isinstance(log_format, (LogFormat, str)):
        fmt = log_format.value if isinstance(log_format, LogFormat) else log_format
        cls = ObjectPrefixingTextFormatter if log_prefix else ObjectTextFormatter
        return cls(fmt)
    else:
        raise ValueError(f"Unsupported log format: {log_format!r}")

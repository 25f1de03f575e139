"""
Destinations for request and response records.
"""

from abc import ABC, abstractmethod
import json
import logging
from pathlib import Path
from typing import Any, Mapping, Union

from .util import DataclassJSONEncoder


logger = logging.getLogger(__name__)


class RecordEncoder(DataclassJSONEncoder):
    def default(self, o):
        try:
            return super().default(o)
        except TypeError:
            return repr(o)


class RecordSink(ABC):
    @abstractmethod
    def write(self, record: Mapping[str, Any]) -> None:
        """
        Persist or emit one record.
        """


class LoggerSink(RecordSink):
    def __init__(self, target: logging.Logger = logger, level: int = logging.INFO) -> None:
        self.__target = target
        self.__level = level

    def write(self, record: Mapping[str, Any]) -> None:
        self.__target.log(self.__level, json.dumps(record, cls=RecordEncoder))


class FileSink(RecordSink):
    """
    Appends records to a file, one JSON document per line.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.__path = Path(path)

    @property
    def path(self) -> Path:
        return self.__path

    def write(self, record: Mapping[str, Any]) -> None:
        self.__path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.__path, 'a', encoding='utf-8') as f:
            f.write(json.dumps(record, cls=RecordEncoder))
            f.write('\n')


def as_sink(target: Union[None, str, Path, RecordSink]) -> RecordSink:
    if isinstance(target, RecordSink):
        return target
    if target is None:
        return LoggerSink()
    return FileSink(target)

"""
Canned responses that replace the whole dispatch pipeline.
"""

import json
import logging
from pathlib import Path
import runpy
from typing import Any

from .errors import EmptyMockError, MockError, MockFileNotFoundError
from .interpret import is_json


logger = logging.getLogger(__name__)

DATA_EXTENSIONS = ('.json', '.xml', '.txt')
SCRIPT_EXTENSIONS = ('.py',)
SCRIPT_VARIABLE = 'MOCK'


def _is_empty(payload: Any) -> bool:
    if payload is None:
        return True
    try:
        return len(payload) == 0
    except TypeError:
        return False


class MockOverlay:
    def __init__(self) -> None:
        self.__payload = None
        self.__armed = False

    @property
    def armed(self) -> bool:
        return self.__armed

    @property
    def payload(self) -> Any:
        return self.__payload

    def arm(self, payload: Any, allow_empty: bool = False, decode: bool = False) -> Any:
        """
        Arm the overlay. Must happen before dispatching.

        @param payload
          The canned response: a value, or the path of a .json/.xml/.txt file
          to read, or of a .py file whose `MOCK` variable holds the value.
        @param allow_empty
          Accept an empty payload.
        @param decode
          Whether the client decodes responses. When it does not, payloads that
          are not already JSON text are stored as JSON text.
        @return
          The payload as stored.
        @throws EmptyMockError
          If `payload` is empty and `allow_empty` is false.
        @throws MockFileNotFoundError
          If `payload` names a file that does not exist.
        """
        if not allow_empty and _is_empty(payload):
            raise EmptyMockError()

        payload = self._resolve_file(payload)

        if not decode and not is_json(payload):
            payload = json.dumps(payload)

        self.__payload = payload
        self.__armed = True
        logger.info('Mock armed; requests will not be sent.')
        return payload

    def disarm(self) -> None:
        self.__payload = None
        self.__armed = False

    def _resolve_file(self, payload: Any) -> Any:
        if not isinstance(payload, (str, Path)):
            return payload

        suffix = Path(str(payload)).suffix.lower()
        if suffix not in DATA_EXTENSIONS + SCRIPT_EXTENSIONS:
            return payload

        path = Path(payload)
        if not path.is_file():
            raise MockFileNotFoundError(path)

        if suffix in SCRIPT_EXTENSIONS:
            namespace = runpy.run_path(str(path))
            if SCRIPT_VARIABLE not in namespace:
                raise MockError("Mock script '{}' does not define {}".format(path, SCRIPT_VARIABLE))
            return namespace[SCRIPT_VARIABLE]

        return path.read_text(encoding='utf-8')

"""
Editor File Manager
===================

Glue between an editor buffer and a :class:`DeviceSession`: list the
board's scripts, load one into the editor, save the editor back, run it
and stop it.

>>> editor = TextBuffer()
>>> manager = FileManager(session, editor)
>>> await manager.refresh_file_list()
['main.py', 'temp.py']
>>> await manager.load_file("main.py")
>>> editor.get_text()
"print('hello')\\n"
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Union

from .protocol import DEFAULT_FILENAME
from .session import DeviceSession

logger = logging.getLogger(__name__)

FileListConsumer = Callable[[List[str]], Union[None, Awaitable[Any]]]


class EditorBuffer(ABC):
    """Text source/sink the file manager reads from and writes into."""

    @abstractmethod
    def get_text(self) -> str:
        ...

    @abstractmethod
    def set_text(self, text: str) -> None:
        ...


class TextBuffer(EditorBuffer):
    """In-memory editor buffer."""

    def __init__(self, text: str = ""):
        self.text = text

    def get_text(self) -> str:
        return self.text

    def set_text(self, text: str) -> None:
        self.text = text


class FileManager:
    """
    Editor-facing file operations on the board.

    Attributes:
        session: Session used for every device operation
        editor: Buffer holding the script being edited
        current_file: Name of the last file loaded or saved
    """

    def __init__(self, session: DeviceSession, editor: EditorBuffer):
        self.session = session
        self.editor = editor
        self.current_file: Optional[str] = None

    async def refresh_file_list(self, consumer: Optional[FileListConsumer] = None) -> List[str]:
        """Fetch the board's script names and hand them to ``consumer``."""
        files = await self.session.list_files()
        if not files:
            logger.info("No matching files found on the board")
        if consumer is not None:
            result = consumer(files)
            if inspect.isawaitable(result):
                await result
        return files

    async def load_file(self, name: str) -> str:
        """Read ``name`` from the board into the editor."""
        data = await self.session.read_file(name)
        text = data.decode("utf-8", errors="replace")
        self.editor.set_text(text)
        self.current_file = name
        logger.info("Loaded file: %s", name)
        return text

    async def load_temp(self) -> str:
        return await self.load_file(DEFAULT_FILENAME)

    async def save_file(self, name: str = DEFAULT_FILENAME) -> None:
        """Write the editor contents to ``name`` on the board."""
        data = self.editor.get_text().encode("utf-8")
        await self.session.write_file(name, data)
        self.current_file = name
        logger.info("File saved: %s", name)

    async def run_editor(self) -> None:
        """Execute the editor contents on the board."""
        await self.session.run_code(self.editor.get_text())

    async def stop(self) -> None:
        """Interrupt whatever the board is running."""
        await self.session.interrupt()

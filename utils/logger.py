from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union
import logging
import multiprocessing
import sys
import time

class Logger:
    _logger: logging.Logger = logging.getLogger("stock_gru")
    _console_handler: Optional[logging.Handler] = None
    _file_handler: Optional[logging.Handler] = None
    _level: int = logging.INFO
    _configured: bool = False

    class UTCFormatter(logging.Formatter):
        converter = time.gmtime
        _fmt = "%(asctime)sZ - %(levelname)s - %(message)s"
        _datefmt = "%Y-%m-%dT%H:%M:%S"

        def __init__(self) -> None:
            super().__init__(Logger.UTCFormatter._fmt, Logger.UTCFormatter._datefmt)

    @classmethod
    def _get_entry_name(cls) -> str:
        import __main__ as _m

        fp = getattr(_m, "__file__", None)
        if fp:
            return Path(fp).stem
        if len(sys.argv) > 0 and sys.argv[0]:
            return Path(sys.argv[0]).stem
        return "stock_gru"

    @classmethod
    def _get_context(cls) -> str:
        try:
            # 0=_get_context, 1=Logger.<level>, 2=caller
            frame = sys._getframe(2)
            func = frame.f_code.co_name
            locals_ = frame.f_locals
            if "self" in locals_:
                return f"[{type(locals_['self']).__name__}::{func}]"
            if "cls" in locals_ and isinstance(locals_["cls"], type):
                return f"[{locals_['cls'].__name__}::{func}]"
            return f"[{func}]"
        except ValueError:
            return "[unknown]"

    @classmethod
    def _ensure_configured(cls) -> None:
        if cls._configured:
            return
        cls._console_handler = logging.StreamHandler()
        cls._console_handler.setLevel(cls._level)
        cls._console_handler.setFormatter(cls.UTCFormatter())
        cls._logger.addHandler(cls._console_handler)
        cls._logger.setLevel(cls._level)
        cls._logger.propagate = False
        cls._configured = True

    @classmethod
    def set_level(cls, level_: Union[int, str]) -> None:
        if isinstance(level_, str):
            level_ = logging.getLevelName(level_.upper())
            if not isinstance(level_, int):
                raise ValueError(f"Unknown log level: {level_}")
        cls._ensure_configured()
        cls._level = level_
        cls._logger.setLevel(level_)
        for handler in cls._logger.handlers:
            handler.setLevel(level_)

    @classmethod
    def setup_file(cls, path: Union[str, Path]) -> Path:
        """Attach a per-run log file under `path`, replacing any previous file handler."""
        cls._ensure_configured()
        path_obj = Path(path)
        entry = cls._get_entry_name()
        date_str = datetime.now().strftime("%Y%m%d_%H%M%S")
        process_name = multiprocessing.current_process().name
        file_path = path_obj / f"{entry}_{date_str}_{process_name}.log"
        path_obj.mkdir(parents=True, exist_ok=True)
        cls.close_file()
        cls._file_handler = logging.FileHandler(file_path, encoding="utf-8")
        cls._file_handler.setLevel(cls._level)
        cls._file_handler.setFormatter(cls.UTCFormatter())
        cls._logger.addHandler(cls._file_handler)
        cls._logger.info(f"[Logger::setup_file] writing to {file_path}")
        return file_path

    @classmethod
    def close_file(cls) -> None:
        if cls._file_handler is None:
            return
        cls._logger.removeHandler(cls._file_handler)
        cls._file_handler.close()
        cls._file_handler = None

    @classmethod
    def info(cls, msg: str, *args: Any, **kwargs: Any) -> None:
        cls._ensure_configured()
        cls._logger.info(f"{cls._get_context()} {msg}", *args, **kwargs)

    @classmethod
    def debug(cls, msg: str, *args: Any, **kwargs: Any) -> None:
        cls._ensure_configured()
        cls._logger.debug(f"{cls._get_context()} {msg}", *args, **kwargs)

    @classmethod
    def warning(cls, msg: str, *args: Any, **kwargs: Any) -> None:
        cls._ensure_configured()
        cls._logger.warning(f"{cls._get_context()} {msg}", *args, **kwargs)

    @classmethod
    def error(cls, msg: str, *args: Any, **kwargs: Any) -> None:
        cls._ensure_configured()
        cls._logger.error(f"{cls._get_context()} {msg}", *args, **kwargs)

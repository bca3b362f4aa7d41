import pathlib

_VERSION_PATH = pathlib.Path(__file__).with_name("VERSION")


def read_version(path: pathlib.Path = _VERSION_PATH) -> str:
    """Version recorded in the packaged ``VERSION`` file."""
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return "0.0.0"


__version__ = read_version()

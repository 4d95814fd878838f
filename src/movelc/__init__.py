"""movelc – Move-on-Aptos language client controller."""
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version('movelc')
except PackageNotFoundError:
    __version__ = '0.0.0.dev0'

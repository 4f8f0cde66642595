"""Comic movie maker package.

A six-stage wizard that turns a short idea into a character, a sixteen
page illustrated comic and a narrated movie with a few animated scenes.
"""

from .controller import StageController  # noqa: F401
from .pipeline import ComicMovieMaker  # noqa: F401

__all__ = ["ComicMovieMaker", "StageController"]

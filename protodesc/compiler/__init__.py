"""Schema language front-end: tokenizer, parser and linker."""

from .diagnostics import *
from .lexer import ProtoToken as ProtoToken
from .lexer import TokenKind as TokenKind
from .lexer import tokenize as tokenize
from .parser import parse as parse
from .parser import validate as validate
from .resolver import Linker as Linker
from .types import *

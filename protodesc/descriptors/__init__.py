"""Descriptor records, the descriptor pool and its query functions.

The pool lives in protodesc.descriptors.pool and the flat accessors in
protodesc.descriptors.query; this package only exposes the record types.
"""

from .types import *

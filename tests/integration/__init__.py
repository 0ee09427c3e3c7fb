"""
Integration tests for the readylive library.

These tests bind real sockets on localhost; select or skip them with
``-m integration`` / ``-m "not integration"``.
"""

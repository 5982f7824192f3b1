"""Command capture, backend logging and errors shared by every backend."""

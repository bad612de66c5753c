"""Command line interface modules.

This package provides the command-line tools for:
- Starting and configuring the demultiplexing proxy
- Running a throwaway echo backend for local testing
- Classifying a datagram by hand
"""

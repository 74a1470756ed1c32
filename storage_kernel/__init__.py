"""
Storage Kernel

Pure domain core for warehouse storage billing:
- Typed storage records and update instructions
- Decimal-only money with ISO 4217 currencies
- Typed, code-carrying exceptions
- Structured JSON logging
"""

__version__ = "0.1.0"

"""Compile SysY syntax trees to Koopa IR text and RISC-V 32 assembly."""

__version__ = "0.1.0"
__all__ = ["ast", "ir", "koopa_text", "lower", "riscv"]
"""Relatórios derivados do histórico de pipelines."""

from .report_md import generate_report_md

__all__ = ["generate_report_md"]

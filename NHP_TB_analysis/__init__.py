"""
Source code for analysis of immune correlates of protection of macaques vaccinated with intravenous BCG.

This package contains modules for loading, normalizing, and analyzing
animal metadata, immune variables, and gene expression from studies of BCG dose and protection from TB.
"""

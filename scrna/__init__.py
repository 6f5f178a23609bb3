"""PBMC single-cell RNA-seq analysis utilities"""

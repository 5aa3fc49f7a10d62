"""
Resource context tests

Test app with small library models (authors, series, books) used to exercise
context propagation and the optimizer.
"""

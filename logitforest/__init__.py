"""Stepwise logistic regression extraction and forest plots for SPSS Excel exports."""

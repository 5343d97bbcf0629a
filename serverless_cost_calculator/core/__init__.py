"""
Core modules for the Serverless Cost Calculator.

This package contains the cost model: pricing tables, request unit and
storage charges, extrapolation, report synthesis and the estimation engine.
"""

"""
Factor Modules.

Business modules of the factor operation engine:
- factor: factor registry, operation lifecycle, versions, responses, settlement
- receivables: receivable installments and factor custody
- payables: payable titles that carry factor costs
"""

"""Output layer — Rich and JSON rendering of ServiceResult.

Depends only on rich and the ServiceResult contract.
"""

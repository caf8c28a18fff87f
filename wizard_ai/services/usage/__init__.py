"""
Usage accounting: the append-only ledger, token pricing and cost reports.
"""

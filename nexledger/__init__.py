"""NexLedger — expense-sharing ledger with a settlement and debt engine."""

"""Pure domain types and rules for contracts, signatures and renewals."""

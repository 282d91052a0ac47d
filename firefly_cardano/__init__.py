"""Building blocks for a FireFly connector to the Cardano blockchain: chain following, persistence, contract events, coin selection and transaction lifecycle tracking."""

__version__ = "0.6.1"
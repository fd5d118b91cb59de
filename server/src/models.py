from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Integer, String, Text
from sqlmodel import Field, SQLModel


class Node(SQLModel, table=True):
    """A public daemon listed in the node directory."""

    __tablename__ = "nodes"

    id: str = Field(
        sa_column=Column(String(64), primary_key=True, nullable=False),
        description="HMAC-SHA256 of the node's hostname, port and ssl flag",
    )
    name: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Display name from the directory",
    )
    hostname: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Hostname or address of the daemon RPC endpoint",
    )
    port: int = Field(
        default=11898,
        sa_column=Column(Integer, nullable=False, server_default="11898"),
        description="Daemon RPC port",
    )
    ssl: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="0"),
        description="True when the RPC endpoint is served over TLS",
    )
    cache: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="0"),
        description="True when the endpoint is a blockchain cache API rather than a daemon",
    )


class NodePolling(SQLModel, table=True):
    """One health sample for a node at a polling tick."""

    __tablename__ = "node_polling"

    id: str = Field(
        sa_column=Column(
            String(64),
            ForeignKey("nodes.id", ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
        description="Identifier of the polled node",
    )
    utc_timestamp: int = Field(
        sa_column=Column(BigInteger, primary_key=True, nullable=False),
        description="Polling tick in UTC epoch milliseconds",
    )
    synced: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="0"),
        description="True when the daemon reported itself synced",
    )
    fee_address: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    fee_amount: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, server_default="0"))
    height: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, server_default="0"))
    version: str = Field(default="offline", sa_column=Column(String(64), nullable=False))
    connections_in: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    connections_out: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    difficulty: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, server_default="0"))
    hashrate: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, server_default="0"))
    transaction_pool_size: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, server_default="0")
    )


# Core table objects used to build statements through the storage backend.
nodes_table = Node.__table__
node_polling_table = NodePolling.__table__

TABLES = (nodes_table, node_polling_table)


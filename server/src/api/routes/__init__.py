from . import (
	health,
	loggers,
	nodes,
	polling,
	stats,
)


__all__ = [
	"health",
	"loggers",
	"nodes",
	"polling",
	"stats",
]

"""
Control-number counters.

One row per (prefix, year).  ``last_value`` is only ever moved forward with an
in-place ``UPDATE ... SET last_value = last_value + 1`` so two writers can
never read the same value: the first writer's row lock (PostgreSQL) or the
database write lock (SQLite) holds until its transaction ends.
"""

from mocflow.models import db


class ControlNumberCounter(db.Model):
    __tablename__ = "control_number_counters"
    __table_args__ = (
        db.UniqueConstraint("prefix", "year", name="uq_control_number_prefix_year"),
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(10), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "prefix": self.prefix,
            "year": self.year,
            "last_value": self.last_value,
        }

    def __repr__(self):
        return f"<ControlNumberCounter {self.prefix}-{self.year}={self.last_value}>"

"""Project model.

Projects are edited from the admin screens; this service only reads them to
seed a campaign the first time someone donates to a project slug.
"""

from donation_api.extensions import db


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.String(100), primary_key=True)  # doubles as the public slug
    title = db.Column(db.String(255), nullable=True)
    goal_amount = db.Column(db.Numeric(12, 2), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<Project {self.id}>"

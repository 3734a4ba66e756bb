"""Forms for the user blueprint."""

from flask_wtf import FlaskForm  # type: ignore
from wtforms import StringField
from wtforms.validators import DataRequired, Email, Length


class UpdateProfileForm(FlaskForm):
    """Form for updating a user's name and email."""

    name = StringField("Name", validators=[DataRequired(), Length(max=100)])
    email = StringField("Email", validators=[DataRequired(), Email()])

"""Forms for the group blueprint."""

from flask_wtf import FlaskForm
from wtforms import StringField, TextAreaField
from wtforms.validators import DataRequired, Email, Length, Optional

from hangsmart.core.constants import GROUP_CODE_LENGTH


class GroupForm(FlaskForm):
    """Form for creating a new group."""

    name = StringField("Group Name", validators=[DataRequired()])


class JoinGroupForm(FlaskForm):
    """Form for joining a group by its code."""

    code = StringField(
        "Group Code",
        validators=[DataRequired(), Length(max=GROUP_CODE_LENGTH * 2)],
    )


class PreferencesForm(FlaskForm):
    """Form for a member's preferences. Every field may be left empty."""

    interests = TextAreaField("Interests", validators=[Optional()])
    availability = TextAreaField("Availability", validators=[Optional()])
    special_requests = TextAreaField("Special Requests", validators=[Optional()])
    location = StringField("Location", validators=[Optional()])


class InviteByEmailForm(FlaskForm):
    """Form for sending a group's join code by email."""

    email = StringField("Email", validators=[DataRequired(), Email()])

"""Forms for the offline sync API."""

from wtforms import SelectField, StringField
from wtforms.validators import DataRequired

from idpatourney.core.forms import JsonForm
from idpatourney.scoring.conflicts import MERGE, USE_LOCAL, USE_SERVER


class UserForm(JsonForm):
    """Form naming the user whose queue is affected."""

    userId = StringField("User", validators=[DataRequired()])  # noqa: N815


class ResolveForm(JsonForm):
    """Form carrying the choice that settles a score conflict."""

    choice = SelectField(
        "Choice",
        choices=[USE_LOCAL, USE_SERVER, MERGE],
        validators=[DataRequired()],
    )

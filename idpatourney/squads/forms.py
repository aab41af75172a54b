"""Forms for registrations and squads."""

from wtforms import IntegerField, SelectField, SelectMultipleField, StringField
from wtforms.validators import AnyOf, DataRequired, InputRequired, NumberRange, Optional

from idpatourney.constants import CLASSIFICATIONS, DIVISIONS
from idpatourney.core.forms import JsonForm


class RegistrationForm(JsonForm):
    """Form for registering a shooter into a squad."""

    tournamentId = StringField("Tournament", validators=[DataRequired()])  # noqa: N815
    shooterId = StringField("Shooter", validators=[DataRequired()])  # noqa: N815
    squadId = StringField("Squad", validators=[DataRequired()])  # noqa: N815
    division = SelectField(
        "Division", choices=list(DIVISIONS), validators=[DataRequired()]
    )
    classification = SelectField(
        "Classification", choices=list(CLASSIFICATIONS), validators=[DataRequired()]
    )
    # Categories are checked against the tournament by the service
    customCategories = SelectMultipleField(  # noqa: N815
        "Custom Categories", validate_choice=False, validators=[Optional()]
    )


class OwnerForm(JsonForm):
    """Form identifying the shooter making a registration change."""

    userId = StringField("User", validators=[DataRequired()])  # noqa: N815


class TransferForm(OwnerForm):
    """Form for moving a registration to another squad."""

    newSquadId = StringField("New Squad", validators=[DataRequired()])  # noqa: N815


class CheckInForm(JsonForm):
    """Form for checking a shooter in."""

    division = StringField("Division", validators=[Optional(), AnyOf(DIVISIONS)])
    classification = StringField(
        "Classification", validators=[Optional(), AnyOf(CLASSIFICATIONS)]
    )


class CapacityForm(JsonForm):
    """Form for changing a squad's capacity."""

    maxShooters = IntegerField(  # noqa: N815
        "Max Shooters", validators=[InputRequired(), NumberRange(min=1)]
    )


class OfficerForm(JsonForm):
    """Form for assigning a security officer."""

    officerId = StringField("Officer", validators=[DataRequired()])  # noqa: N815

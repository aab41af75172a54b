"""Forms for the tournament blueprint."""

from wtforms import DecimalField, IntegerField, SelectField, StringField
from wtforms.validators import DataRequired, InputRequired, NumberRange, Optional

from idpatourney.core.forms import JsonForm


class StageForm(JsonForm):
    """Form for adding a stage to a tournament."""

    name = StringField("Name", validators=[DataRequired()])
    stageNumber = IntegerField(  # noqa: N815
        "Stage Number", validators=[InputRequired(), NumberRange(min=1)]
    )
    strings = IntegerField("Strings", validators=[InputRequired(), NumberRange(min=1)])
    roundCount = IntegerField(  # noqa: N815
        "Round Count", validators=[InputRequired(), NumberRange(min=1)]
    )
    scoringType = SelectField(  # noqa: N815
        "Scoring Type",
        choices=[("comstock", "Comstock"), ("limited", "Limited"), ("speed", "Speed")],
        default="comstock",
        validators=[Optional()],
    )
    parTime = DecimalField(  # noqa: N815
        "Par Time", places=None, validators=[Optional(), NumberRange(min=0)]
    )

import random
from datetime import datetime
from typing import Annotated, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

# --- Soil / Climate Input Ranges ---
# (min, max) per field; the form sliders and the sample generator use the same bounds.
FIELD_RANGES: Dict[str, Tuple[float, float]] = {
    "nitrogen": (0, 140),
    "phosphorus": (5, 145),
    "potassium": (5, 205),
    "temperature": (0, 50),
    "humidity": (0, 100),
    "ph": (0, 14),
    "rainfall": (0, 300),
}

FIELD_UNITS: Dict[str, str] = {
    "nitrogen": "kg/ha",
    "phosphorus": "kg/ha",
    "potassium": "kg/ha",
    "temperature": "°C",
    "humidity": "%",
    "ph": "",
    "rainfall": "mm",
}


def _reading(name: str, description: str):
    low, high = FIELD_RANGES[name]
    return Annotated[
        float,
        Field(ge=low, le=high, strict=True, allow_inf_nan=False, description=description),
    ]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Crop Recommendation ---
class CropRecommendationInput(BaseModel):
    nitrogen: _reading("nitrogen", "The level of Nitrogen (N) in the soil.")
    phosphorus: _reading("phosphorus", "The level of Phosphorus (P) in the soil.")
    potassium: _reading("potassium", "The level of Potassium (K) in the soil.")
    temperature: _reading("temperature", "The ambient temperature in Celsius.")
    humidity: _reading("humidity", "The relative humidity as a percentage.")
    ph: _reading("ph", "The pH level of the soil.")
    rainfall: _reading("rainfall", "The amount of rainfall in millimeters.")


class CropRecommendationOutput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    recommended_crop: str = Field(min_length=1, description="The most suitable crop for the given conditions.")
    fertilizer: str = Field(min_length=1, description="The appropriate fertilizer to use for the recommended crop.")
    tips: str = Field(
        min_length=1,
        description="Actionable cultivation tips for the recommended crop, with each tip starting "
        "with a bullet point and on a new line.",
    )


def sample_conditions(rng: Optional[random.Random] = None) -> CropRecommendationInput:
    """Random soil/climate reading inside the declared ranges, for trying the form out."""
    rng = rng or random.Random()
    values = {name: round(rng.uniform(low, high), 2) for name, (low, high) in FIELD_RANGES.items()}
    return CropRecommendationInput(**values)


# --- Plant Disease Detection ---
DATA_URI_PATTERN = r"^data:image/(png|jpeg|webp);base64,[A-Za-z0-9+/]+=*$"


class DiseaseDetectionInput(CamelModel):
    photo_data_uri: str = Field(
        pattern=DATA_URI_PATTERN,
        description="A photo of a diseased plant, as a data URI that must include a MIME type and "
        "use Base64 encoding. Expected format: 'data:<mimetype>;base64,<encoded_data>'.",
    )


class DiseaseDetectionOutput(CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    disease: str = Field(min_length=1, description="The name of the identified plant disease.")
    confidence: str = Field(
        min_length=1, description='The confidence level of the disease diagnosis (e.g., "92%").'
    )
    cure_instructions: str = Field(
        min_length=1, description="Step-by-step instructions for curing the identified disease."
    )
    prevention_tips: str = Field(
        min_length=1,
        description="Tips and best practices for preventing future occurrences of the disease.",
    )


# --- Action Envelope ---
class ActionResult(CamelModel):
    data: Optional[Union[CropRecommendationOutput, DiseaseDetectionOutput]] = None
    error: Optional[str] = None
    history_id: Optional[str] = None

    @model_validator(mode="after")
    def _data_xor_error(self):
        if (self.data is None) == (self.error is None):
            raise ValueError("exactly one of 'data' or 'error' must be set")
        if self.error is not None and not self.error.strip():
            raise ValueError("'error' must not be empty")
        return self


# --- History Records ---
# Stored readings are not range-checked; earlier form versions accepted wider bounds.
class StoredReadings(BaseModel):
    nitrogen: float
    phosphorus: float
    potassium: float
    temperature: float
    humidity: float
    ph: float
    rainfall: float


class CropRecommendationRecord(CamelModel):
    id: str
    inputs: StoredReadings
    output: CropRecommendationOutput
    created_at: Optional[datetime] = None


class DiseaseDetectionRecord(CamelModel):
    id: str
    photo_data_uri: str
    output: DiseaseDetectionOutput
    created_at: Optional[datetime] = None


class HistoryResponse(CamelModel):
    crop_recommendations: List[CropRecommendationRecord] = []
    disease_detections: List[DiseaseDetectionRecord] = []


# --- Auth ---
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, description="Password must be at least 6 characters long.")


class SignupRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6, description="Password must be at least 6 characters long.")
    display_name: Optional[str] = Field(default=None, max_length=100)


class AuthUser(CamelModel):
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None

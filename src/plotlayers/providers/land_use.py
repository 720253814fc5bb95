"""Land cover layers from DGT WMS services: COS 2018, CORINE 2012, built-up areas."""

import httpx

from plotlayers.config import settings
from plotlayers.core.types import LayerQuery
from plotlayers.geometry import bbox_around_point, buffer_meters
from plotlayers.providers.base import LayerProvider, fetch_wms_features, first_present


class WMSLandUseProvider(LayerProvider):
    """GetFeatureInfo at the point against one DGT geoserver workspace."""

    category = "landuse"
    supports_bbox = True
    workspace: str
    wms_layer: str

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        bbox = bbox_around_point(query.point.lng, query.point.lat, buffer_meters(query.area_m2))
        url = f"{settings.dgt_wms_base.rstrip('/')}/{self.workspace}/wms"
        features = await fetch_wms_features(client, url, self.wms_layer, bbox)
        if not features:
            return None
        return self.map_properties(features[0].get("properties") or {})

    def map_properties(self, props: dict) -> dict:
        raise NotImplementedError


class COSProvider(WMSLandUseProvider):
    layer_id = "pt-cos"
    layer_name = "Carta de Ocupação do Solo (COS)"
    workspace = "COS2018"
    wms_layer = "COS2018:COS2018v2"

    def map_properties(self, props: dict) -> dict:
        # Level 4 is the most detailed class; older vintages only carry level 3
        return {
            "cos": first_present(props, "COS18n4_L", "COS18n3_L", "COS2018_Leg", "Descricao"),
            "cos_code": first_present(props, "COS18n4_C", "COS18n3_C", "COS2018"),
            "cos_level1": first_present(props, "COS18n1_L", "Nivel1"),
            "cos_level1_code": props.get("COS18n1_C"),
            "cos_level2": first_present(props, "COS18n2_L", "Nivel2"),
            "cos_level2_code": props.get("COS18n2_C"),
            "cos_level3": first_present(props, "COS18n3_L", "Nivel3"),
            "cos_level3_code": props.get("COS18n3_C"),
            "cos_level4": props.get("COS18n4_L"),
            "cos_level4_code": props.get("COS18n4_C"),
            "area_ha": props.get("Area_ha"),
            "source": "DGT COS 2018",
        }


class CLCProvider(WMSLandUseProvider):
    layer_id = "pt-clc"
    layer_name = "CORINE Land Cover (CLC)"
    workspace = "CLC"
    wms_layer = "CLC2012"

    def map_properties(self, props: dict) -> dict:
        label3 = first_present(props, "Legenda", "LABEL3", "Label3", "Descricao")
        return {
            "clc": label3,
            "clc_code": first_present(props, "CLC2012", "CODE_18", "Code_18"),
            "area_ha": props.get("AREA_ha"),
            "clc_level1": first_present(props, "LABEL1", "Label1"),
            "clc_level2": first_present(props, "LABEL2", "Label2"),
            "clc_level3": label3,
            "source": "CORINE Land Cover 2012",
        }


class BuiltUpAreaProvider(WMSLandUseProvider):
    layer_id = "pt-built-up"
    layer_name = "Built-up Areas"
    workspace = "AE"
    wms_layer = "AreasEdificadas2018"

    def map_properties(self, props: dict) -> dict:
        return {
            "is_built_up": True,
            "classification": first_present(props, "Classe", "CLASSE", "Tipo"),
            "source": "DGT Áreas Edificadas 2018",
            "attributes": props,
        }

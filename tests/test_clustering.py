from citymap.clustering import ClusterItem, ClusterRenderer, MarkerItem
from citymap.models import Building


def _buildings():
    return [
        Building(id=1, lat=53.9000, lng=27.5600),
        Building(id=2, lat=53.9002, lng=27.5604, high_count=1, status="yellow"),
        Building(id=3, lat=53.9500, lng=27.7000, help_count=2),
    ]


def test_nearby_buildings_cluster_at_city_zoom():
    items = ClusterRenderer(radius_px=30).render(_buildings(), zoom=12)

    clusters = [i for i in items if isinstance(i, ClusterItem)]
    markers = [i for i in items if isinstance(i, MarkerItem)]
    assert len(clusters) == 1
    assert clusters[0].building_ids == (1, 2)
    assert clusters[0].count == 2
    assert clusters[0].size_class == "small"
    assert [m.building.id for m in markers] == [3]
    assert markers[0].glyph.badged


def test_clusters_break_apart_when_zooming_in():
    items = ClusterRenderer(radius_px=30).render(_buildings(), zoom=19)

    assert all(isinstance(i, MarkerItem) for i in items)
    assert sorted(i.building.id for i in items) == [1, 2, 3]


def test_marker_emphasis_and_dimming():
    renderer = ClusterRenderer()
    selected, high, plain = Building(id=1, lat=0, lng=0), _buildings()[1], _buildings()[2]

    assert renderer.marker_for(selected, selected_id=1).glyph.kind == "selected"
    assert renderer.marker_for(selected, selected_id=1).opacity == 1.0
    assert renderer.marker_for(plain, selected_id=1).opacity == 0.7
    assert renderer.marker_for(plain).opacity == 1.0
    assert renderer.marker_for(high).z_offset == 1000
    assert renderer.marker_for(plain).z_offset == 0


def test_cluster_size_classes():
    assert ClusterItem(0, 0, tuple(range(9))).size_class == "small"
    assert ClusterItem(0, 0, tuple(range(10))).size_class == "medium"
    assert ClusterItem(0, 0, tuple(range(100))).size_class == "large"


def test_empty_input_renders_nothing():
    assert ClusterRenderer().render([], zoom=12) == []

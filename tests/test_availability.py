from smtp_simulator.availability import RecipientAvailability


def test_toggle_notifies_listeners_in_order():
    availability = RecipientAvailability()
    calls = []
    availability.subscribe(lambda v: calls.append(("first", v)))
    availability.subscribe(lambda v: calls.append(("second", v)))

    assert availability.toggle() is False
    assert availability.toggle() is True

    assert calls == [("first", False), ("second", False), ("first", True), ("second", True)]


def test_set_only_notifies_on_change():
    availability = RecipientAvailability(False)
    calls = []
    availability.subscribe(calls.append)

    assert availability.set(False) is False
    assert availability.set(True) is True
    assert calls == [True]
    assert bool(availability) is True


def test_unsubscribe_stops_notifications():
    availability = RecipientAvailability()
    calls = []
    availability.subscribe(calls.append)
    availability.unsubscribe(calls.append)

    availability.toggle()

    assert calls == []
    assert availability.available is False
